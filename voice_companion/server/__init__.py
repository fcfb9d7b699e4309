from .app import create_app
from .providers import OpenAIProviders, SpeechProviders

__all__ = ["create_app", "OpenAIProviders", "SpeechProviders"]
