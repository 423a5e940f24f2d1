"""
LLM Provider factory.
"""

from fallacyscan.llm import LLMProvider


def get_provider(provider_name: str = "gemini") -> LLMProvider:
    """Return the provider registered under provider_name."""
    if provider_name == "gemini":
        from fallacyscan.llm.gemini import GeminiProvider
        return GeminiProvider()
    elif provider_name == "openai":
        from fallacyscan.llm.openai_chat import OpenAIProvider
        return OpenAIProvider()
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")
