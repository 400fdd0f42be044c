"""
Constants for reasoning-engine calls.

This module centralizes the magic numbers and configuration values used
when invoking pipeline stages, rewrites and acceptance-criteria generation.
"""

# Runtime defaults
# Mirrors the defaults the wizard used for every engine call

# Sampling temperature for stage calls
DEFAULT_TEMPERATURE = 0.7

# Top-k sampling cutoff
DEFAULT_TOP_K = 40

# Maximum output tokens requested per stage call
DEFAULT_MAX_TOKENS = 2000

# Default model identifier
DEFAULT_MODEL_ID = "gemini-2.5-flash"

# Prompt template version used when none is requested
DEFAULT_PROMPT_VERSION = "v1"

# Timeouts and retries
# Per-call timeout in seconds; a timeout is treated like a transport failure
DEFAULT_TIMEOUT_SECONDS = 45

# Hard bounds for a configured timeout
MIN_TIMEOUT_SECONDS = 5
MAX_TIMEOUT_SECONDS = 120

# Total attempts per stage call: the first try plus exactly one retry
MAX_STAGE_ATTEMPTS = 2

# Appended to the user prompt on the retry attempt
RETRY_INSTRUCTION_SUFFIX = (
    "\n\nIMPORTANT: Respond with valid structured output only. "
    "Return a single JSON object and no additional text."
)

# Gemini output ceiling
GEMINI_MAX_OUTPUT_TOKENS = 8192

# Scoring
# Starting score before finding penalties are applied
BASE_QUALITY_SCORE = 100

# Score penalty per finding, keyed by severity
SEVERITY_PENALTIES = {
    "critical": 20,
    "major": 10,
    "minor": 5,
    "info": 2,
}

# Structural parser completeness weights (goal is judged most essential)
COMPLETENESS_WEIGHTS = {
    "role": 35,
    "goal": 40,
    "benefit": 25,
}

# Input limits
# Longest story text accepted by the API
MAX_STORY_TEXT_LENGTH = 10000

# Longest additional-context block accepted by the API
MAX_ADDITIONAL_CONTEXT_LENGTH = 20000

# Truncation used when logging story text
LOG_PREVIEW_CHARS = 100
