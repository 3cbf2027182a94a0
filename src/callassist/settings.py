from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    openai_api_key: str | None = None
    openai_base_url: str | None = "https://api.openai.com/v1"

    max_tool_rounds: int = 5
    turn_timeout_seconds: float = 20.0
    history_limit: int = 10

    redis_url: str | None = None
    context_ttl_seconds: int = 86400  # 24 hours

    crm_base_url: str = "https://login.salesforce.com"
    crm_access_token: str | None = None
    crm_timeout_seconds: float = 15.0

    tts_voice: str | None = None
    tts_language: str | None = "en-US"
    speech_model: str = "experimental_conversations"
    respond_path: str = "/respond"

    default_customer_name: str = "there"
    greeting_template: str = (
        "Hi {name}, I am your AI assistant. I'm here to help you with your "
        "order details. How can I assist you today?"
    )
    fallback_message: str = "I'm sorry, I couldn't process your request."
    no_input_message: str = "Sorry, I didn't catch that. Could you please repeat?"

    agent_system_prompt: str = (
        "You are a customer support assistant for a voice-based service company. "
        "Your role is to assist users with order-related queries in a friendly, "
        "concise, and professional manner.\n"
        "Keep responses short and helpful, ideally one line, because they are "
        "read aloud over the phone.\n"
        "In your first response, use the user's name if available, then switch "
        "to \"you\" or \"your\" in subsequent messages.\n"
        "Avoid repeating \"order summary\" unless the user asks for it explicitly.\n"
        "If the user wants to reschedule their order or isn't available to "
        "receive it, ask: \"Could you please provide a new expected delivery date?\" "
        "and then use the update_delivery_date tool.\n"
        "If the user reports a problem, offer to open a support case with the "
        "create_case tool.\n"
        "If unsure, offer to assist further with: \"How else can I help you today?\""
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
