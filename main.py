"""
main.py
========
Central entry point for the VoiceRelay service.

Run with:
    uvicorn main:app
"""

import logging

from dotenv import load_dotenv

load_dotenv()  # Load .env before any module reads env vars

from voicerelay.config import load_settings  # noqa: E402

settings = load_settings()

# Configure logging for the entire application
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Keep OpenAI SDK and HTTP client chatter out of the relay's log output
for _noisy_logger_name in (
    "openai",
    "openai._base_client",
    "httpx",
    "httpcore",
    "aiohttp.access",
):
    logging.getLogger(_noisy_logger_name).setLevel(logging.WARNING)

from voicerelay.api.control import create_app  # noqa: E402

app = create_app(settings)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000)
