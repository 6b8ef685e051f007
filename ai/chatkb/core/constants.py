"""Application constants."""

# Guardrail messages
NO_KB_MSG = "I don't have enough information in my knowledge base to answer that."

# Renderer tags
RENDERED_STATIC = "static"
RENDERED_JAVASCRIPT = "javascript"

# Lookup sources
LOOKUP_OVERRIDE = "override"
LOOKUP_CACHE = "cache"
LOOKUP_MISS = "miss"

# Stable error strings surfaced on per-page results
ERR_INVALID_URL = "Invalid URL format"
ERR_PROTOCOL = "Only HTTP and HTTPS protocols are allowed"
ERR_PORT = "Only standard HTTP (80) and HTTPS (443) ports are allowed"
ERR_LOCALHOST = "Localhost URLs are not allowed"
ERR_PRIVATE_IPV4 = "Private IP addresses are not allowed"
ERR_PRIVATE_IPV6 = "Private IPv6 addresses are not allowed"
ERR_METADATA = "Metadata endpoints are not allowed"
ERR_DNS_FAILED = "Failed to resolve hostname"
ERR_DNS_PRIVATE = "DNS resolves to private/reserved IP: {address}"
ERR_REDIRECT_BLOCKED = "Redirect blocked: {reason}"
ERR_TOO_MANY_REDIRECTS = "Too many redirects"
ERR_TIMEOUT = "Request timed out"
ERR_NETWORK = "Network error: {detail}"
ERR_NO_CONTENT = "No content could be extracted from the page"
ERR_INSUFFICIENT_CONTENT = "Insufficient content rendered ({count} characters)"

# Elements stripped before text extraction
STRIP_TAGS = ["script", "style", "noscript", "iframe"]

# Main-content containers, in preference order
MAIN_CONTENT_SELECTORS = ["main", "article", "[role=main]"]

# Headless renderer: resource types aborted in the request hook
BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

HEADLESS_VIEWPORT = {"width": 1280, "height": 720}

# URLs with these extensions are not worth a render attempt
NON_HTML_EXTENSIONS = frozenset(
    {
        ".pdf", ".zip", ".gz", ".tar", ".rar", ".7z",
        ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".bmp", ".tiff",
        ".mp4", ".mov", ".avi", ".webm", ".mkv",
        ".mp3", ".wav", ".ogg", ".flac",
        ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        ".exe", ".dmg", ".msi", ".apk", ".bin", ".iso",
        ".css", ".js", ".json", ".xml", ".rss",
        ".woff", ".woff2", ".ttf", ".eot",
    }
)

# Chunk quality filter
FORM_INDICATORS = [
    "confirm password",
    "i accept the terms of use",
    "privacy policy",
    "required fields",
    "submit",
]
MIN_FORM_INDICATORS = 3
MIN_UNIQUE_WORD_RATIO = 0.3
FORM_CHUNK_MAX_CHARS = 2000

MAX_KEYWORDS = 20

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "can", "do",
        "does", "for", "from", "has", "have", "how", "i", "if", "in", "into",
        "is", "it", "its", "me", "my", "not", "of", "on", "or", "our", "so",
        "that", "the", "their", "them", "then", "there", "these", "they",
        "this", "to", "was", "we", "were", "what", "when", "where", "which",
        "who", "why", "will", "with", "you", "your",
    }
)
