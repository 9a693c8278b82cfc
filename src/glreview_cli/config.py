"""Analysis configuration: file categories, exclusions, priority rules, limits."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DEFAULT_GITLAB_URL = "https://gitlab.com"

# --- File categories ---

CODE_EXTENSIONS = {
    # Web
    ".js", ".jsx", ".ts", ".tsx", ".vue", ".html", ".css", ".scss", ".sass", ".less",
    # Backend
    ".py", ".java", ".cs", ".rb", ".go", ".php", ".swift", ".kt", ".scala",
    # Systems
    ".c", ".cpp", ".cc", ".cxx", ".h", ".hpp", ".rs", ".asm",
    # Functional
    ".hs", ".ml", ".fs", ".clj", ".lisp", ".elm",
    # Data & markup
    ".json", ".xml", ".yaml", ".yml", ".toml", ".sql",
    # Shell
    ".sh", ".bash", ".zsh", ".fish", ".ps1", ".bat", ".cmd",
}

CONFIG_EXTENSIONS = {
    ".json", ".yml", ".yaml", ".toml", ".ini", ".conf", ".config",
    ".properties", ".plist", ".xml",
}

DOC_EXTENSIONS = {".md", ".txt", ".rst", ".adoc", ".tex"}

EXCLUDED_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".svg", ".webp",
    ".zip", ".tar", ".gz", ".rar", ".7z", ".bz2",
    ".exe", ".dll", ".so", ".dylib", ".app", ".deb", ".rpm",
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    ".mp4", ".avi", ".mov", ".mp3", ".wav", ".ogg",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".db", ".sqlite", ".dump", ".backup",
}

EXCLUDED_DIRS = {
    "node_modules", "vendor", "build", "dist", "target", "bin", "obj",
    ".git", ".svn", ".hg", ".vs", ".vscode", ".idea",
    "coverage", "__pycache__", ".pytest_cache", ".mypy_cache",
    "logs", "tmp", "temp", ".cache", ".nuxt", ".next",
}

# Language (as reported by GitLab) -> extensions it owns
LANGUAGE_EXTENSIONS = {
    "JavaScript": [".js", ".jsx"],
    "TypeScript": [".ts", ".tsx"],
    "Vue": [".vue"],
    "Python": [".py"],
    "Java": [".java"],
    "C#": [".cs"],
    "Ruby": [".rb"],
    "Go": [".go"],
    "PHP": [".php"],
    "Swift": [".swift"],
    "Kotlin": [".kt"],
    "Scala": [".scala"],
    "C++": [".cpp", ".cc", ".cxx"],
    "C": [".c"],
    "Rust": [".rs"],
}

# Extension -> fenced code block language
EXT_FENCE_LANG = {
    ".js": "javascript", ".jsx": "jsx",
    ".ts": "typescript", ".tsx": "tsx",
    ".vue": "vue",
    ".py": "python",
    ".java": "java",
    ".cs": "csharp",
    ".rb": "ruby",
    ".go": "go",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".cpp": "cpp", ".c": "c",
    ".rs": "rust",
    ".html": "html", ".css": "css", ".scss": "scss",
    ".json": "json",
    ".yml": "yaml", ".yaml": "yaml",
    ".md": "markdown",
}


# --- Priority rules ---

@dataclass(frozen=True)
class PriorityRule:
    """A regex that adds `score` to a file's priority when it matches."""

    pattern: re.Pattern
    score: int

    def __post_init__(self) -> None:
        if self.score < 0:
            raise ValueError(f"Priority rule score must be non-negative: {self.score}")


def _rule(pattern: str, score: int) -> PriorityRule:
    return PriorityRule(re.compile(pattern, re.IGNORECASE), score)


# Matched against the bare file name
NAME_RULES = (
    _rule(r"index", 20),
    _rule(r"main", 20),
    _rule(r"app", 15),
    _rule(r"server", 15),
    _rule(r"config", 10),
    _rule(r"setting", 10),
    _rule(r"auth", 25),
    _rule(r"security", 25),
)

# Matched against the full repository path
PATH_RULES = (
    _rule(r"(^|/)api/", 15),
    _rule(r"(^|/)routes/", 15),
    _rule(r"(^|/)controllers/", 15),
    _rule(r"(^|/)middleware/", 12),
    _rule(r"(^|/)models/", 10),
    _rule(r"(^|/)services/", 10),
    _rule(r"(^|/)utils/", 8),
    _rule(r"(^|/)components/", 8),
)


# --- Review depth & focus ---

CONTENT_LIMITS = {
    "quick": 20,
    "standard": 50,
    "deep": 100,
}

DEPTHS = tuple(CONTENT_LIMITS)
FOCUS_AREAS = ("comprehensive", "security", "performance", "quality", "architecture")

DEFAULT_DIFF_LENGTH = 8000


@dataclass
class AnalysisOptions:
    """Knobs for file selection and content fetching."""

    max_files: int = 100
    max_file_size: int = 100 * 1024  # 100KB
    include_config: bool = True
    include_docs: bool = False
    custom_extensions: list[str] = field(default_factory=list)
    custom_exclusions: list[str] = field(default_factory=list)
    batch_size: int = 10
