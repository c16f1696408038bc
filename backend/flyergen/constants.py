"""Shared constants used across the image generation providers."""

# =============================================================================
# Provider Defaults - SINGLE SOURCE OF TRUTH
# =============================================================================
# Update these when vendor endpoints or model versions change.
# All code should import from here, not hardcode URLs or model strings.

IDEOGRAM_BASE_URL = "https://api.ideogram.ai"
HUGGINGFACE_BASE_URL = "https://api-inference.huggingface.co"
FAL_QUEUE_BASE_URL = "https://queue.fal.run"

HUGGINGFACE_DEFAULT_MODEL = "stabilityai/stable-diffusion-xl-base-1.0"
QWEN_IMAGE_MODEL = "Qwen/Qwen-Image"
FAL_QWEN_MODEL = "fal-ai/qwen-image"
FAL_IDEOGRAM_MODEL = "fal-ai/ideogram/v3"

DEFAULT_REQUEST_TIMEOUT = 120.0  # Seconds per vendor call
DEFAULT_FAL_POLL_INTERVAL = 1.0  # Seconds between Fal queue status checks
EMPTY_REGISTRY_RELOAD_INTERVAL = 30.0  # Seconds between environment re-reads while unconfigured

# Provider priorities (higher = preferred when no explicit provider requested)
PRIORITY_FAL_IDEOGRAM = 102
PRIORITY_FAL_QWEN = 101
PRIORITY_IDEOGRAM = 100
PRIORITY_QWEN = 95
PRIORITY_HUGGINGFACE = 90

# Characters of the prompt included in log lines
LOG_PROMPT_CHARS = 100


# =============================================================================
# Dimension Tables
# =============================================================================
# Normalized dimensions targeting ~1.75 MP for consistent quality across all
# aspect ratios. Every value is divisible by 8.
NORMALIZED_DIMENSIONS: dict[str, tuple[int, int]] = {
    "1:1": (1320, 1320),  # 1.74 MP - Square
    "16:9": (1768, 992),  # 1.75 MP - Widescreen
    "9:16": (992, 1768),  # 1.75 MP - Portrait
    "4:3": (1528, 1144),  # 1.75 MP - Standard
    "3:4": (1144, 1528),  # 1.75 MP - Portrait standard
    "4:5": (1184, 1480),  # 1.75 MP - Instagram portrait
    "5:7": (1120, 1568),  # 1.76 MP - Greeting card
    "3:2": (1624, 1080),  # 1.75 MP - Classic photo
    "2:3": (1080, 1624),  # 1.75 MP - Portrait photo
    "10:16": (1048, 1672),  # 1.75 MP - Story format
    "16:10": (1672, 1048),  # 1.75 MP - Wide format
    "1:3": (768, 2288),  # 1.76 MP - Banner tall
    "3:1": (2288, 768),  # 1.76 MP - Banner wide
}

# SDXL-native sizes (~1 MP) for the Hugging Face Inference models
SDXL_DIMENSIONS: dict[str, tuple[int, int]] = {
    "1:1": (1024, 1024),
    "16:9": (1344, 768),
    "9:16": (768, 1344),
    "4:3": (1152, 896),
    "3:4": (896, 1152),
    "3:2": (1216, 832),
    "2:3": (832, 1216),
}

# Fal-AI named image size presets and the pixel size each one renders at
FAL_PRESET_DIMENSIONS: dict[str, tuple[int, int]] = {
    "square_hd": (1024, 1024),
    "square": (512, 512),
    "portrait_4_3": (768, 1024),
    "portrait_16_9": (576, 1024),
    "landscape_4_3": (1024, 768),
    "landscape_16_9": (1024, 576),
}

# Output sizes Fal-AI Ideogram v3 reports for each requested ratio
FAL_IDEOGRAM_DIMENSIONS: dict[str, tuple[int, int]] = {
    "1:1": (1024, 1024),
    "16:9": (1024, 576),
    "9:16": (576, 1024),
    "4:3": (1024, 768),
    "3:4": (768, 1024),
    "4:5": (1024, 1280),
    "5:7": (1024, 1434),
    "3:2": (1024, 683),
    "2:3": (683, 1024),
    "10:16": (640, 1024),
    "16:10": (1024, 640),
    "1:3": (341, 1024),
    "3:1": (1024, 341),
}

# Ratios that render noticeably blurrier at a given speed tier
PORTRAIT_COMPENSATED_RATIOS = frozenset({"9:16", "3:4", "2:3", "5:7"})


# =============================================================================
# Environment Variables
# =============================================================================
# Variables that must be present for each provider to be instantiated.
PROVIDER_ENV_VARS: dict[str, list[str]] = {
    "fal-ideogram": ["FAL_KEY"],
    "fal-qwen": ["FAL_KEY"],
    "ideogram": ["IDEOGRAM_API_KEY"],
    "qwen": ["HUGGING_FACE_API_TOKEN"],
    "huggingface": ["HUGGING_FACE_API_TOKEN"],
}
