"""Configuration settings for the topic research pipeline."""

import logging
import os
from dotenv import load_dotenv

load_dotenv()

# Logging setup
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)

# SearXNG meta-search instance backing the web engines
SEARXNG_BASE_URL = os.getenv("SEARXNG_BASE_URL", "http://localhost:8080")
SEARXNG_TIMEOUT_SECONDS = float(os.getenv("SEARXNG_TIMEOUT_SECONDS", "15.0"))

# OpenRouter
# Available models via OpenRouter:
# - anthropic/claude-3-5-sonnet (balanced)
# - upstage/solar-pro-3:free (free tier)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_DEFAULT_MODEL = os.getenv("OPENROUTER_DEFAULT_MODEL", "arcee-ai/trinity-mini:free")

# Anthropic (direct API)
# Available models:
# - claude-3-haiku-20240307 (fast, cheap)
# - claude-3-5-sonnet-20241022 (balanced)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_DEFAULT_MODEL = os.getenv("ANTHROPIC_DEFAULT_MODEL", "claude-3-haiku-20240307")

# Generation calls are bounded so planning never blocks indefinitely
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60.0"))

# arXiv settings
ARXIV_RATE_LIMIT_SECONDS = float(os.getenv("ARXIV_RATE_LIMIT_SECONDS", "3.0"))
