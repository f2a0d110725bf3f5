from kfbot.services.speech.iflytek import IflytekASR, IflytekTTS, build_auth_url

__all__ = ["IflytekASR", "IflytekTTS", "build_auth_url"]
