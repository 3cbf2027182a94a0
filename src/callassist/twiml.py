"""TwiML rendering for the voice webhook."""

from twilio.twiml.voice_response import VoiceResponse

from .settings import Settings, get_settings


def _gather(response: VoiceResponse, settings: Settings) -> None:
    response.gather(
        input="speech",
        action=settings.respond_path,
        method="POST",
        speech_timeout="auto",
        speech_model=settings.speech_model,
        enhanced="true",
    )


def render_listen(text: str | None = None, settings: Settings | None = None) -> str:
    """Speak text (when given), then listen for speech and post it to the respond endpoint.

    Text is XML-escaped by the TwiML builder.
    """
    settings = settings or get_settings()
    response = VoiceResponse()
    if text:
        response.say(text, voice=settings.tts_voice, language=settings.tts_language)
    _gather(response, settings)
    return str(response)
