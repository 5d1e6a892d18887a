"""Constants used throughout the annotation learning engine."""

# Pattern learning
MIN_SAMPLES_FOR_PATTERN = 3
DEFAULT_RECOMMENDED_FEATURES = 8
TOP_FEATURES_IN_ANALYTICS = 10
PROMPT_EFFECTIVENESS_TARGET_COUNT = 5  # Annotations per image for full effectiveness

# Quality scoring
VARIANCE_FLOOR = 1e-3
DEFAULT_BBOX_QUALITY = 0.7
DEFAULT_PROMPT_EFFECTIVENESS = 0.7
QUALITY_WEIGHT_CONFIDENCE = 0.4
QUALITY_WEIGHT_BBOX = 0.3
QUALITY_WEIGHT_PROMPT = 0.3

# Positioning model
POSITION_FULL_CONFIDENCE_SAMPLES = 20
POSITION_HINT_MIN_SAMPLES = 3

# Prompt generation
PATTERN_FULL_CONFIDENCE_OBSERVATIONS = 20
PROMPT_CONFIDENCE_PATTERN_WEIGHT = 0.6
PROMPT_CONFIDENCE_POSITIONING_WEIGHT = 0.4
COMMON_MISTAKE_MIN_COUNT = 2
COMMON_MISTAKES_LIMIT = 3
FEATURE_GUIDANCE_PROMPT_LIMIT = 3
SPECIES_CONTEXT_FEATURE_LIMIT = 5
PROMPT_VERSION_LENGTH = 12

# Rejection catalog
MAX_REPRESENTATIVE_NOTES = 5

# Validation
SPANISH_ARTICLES = ("el ", "la ", "los ", "las ")

# Repository key prefixes
PATTERN_KEY_PREFIX = "patterns"
POSITIONING_KEY_PREFIX = "positioning"
REJECTION_KEY_PREFIX = "rejections"
FEEDBACK_KEY_PREFIX = "feedback"

# Export format
STATE_FORMAT_VERSION = 1
