"""Filename and language helpers for generated Next.js projects."""

import re
from typing import Optional

_EXTENSION_LANGUAGES = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "json": "json",
    "css": "css",
    "html": "html",
    "md": "markdown",
    "yml": "yaml",
    "yaml": "yaml",
    "py": "python",
    "sh": "shell",
}

_LANGUAGE_EXTENSIONS = {
    "typescript": "tsx",
    "javascript": "jsx",
    "json": "json",
    "css": "css",
    "html": "html",
    "markdown": "md",
    "yaml": "yml",
    "python": "py",
    "shell": "sh",
    "auto": "tsx",
}

# Short fence tags mapped to their canonical language names
_LANGUAGE_ALIASES = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "py": "python",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
    "yml": "yaml",
    "md": "markdown",
}

_DEFAULT_EXPORT_NAME = re.compile(r"export default function (\w+)")
_PATH = re.compile(r"^[\w@.\-/\[\]()]+\.[A-Za-z0-9]+$")
_DOTFILES = frozenset({".env", ".env.local", ".gitignore", ".eslintrc.json"})


def language_from_extension(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _EXTENSION_LANGUAGES.get(ext, "text")


def normalize_language(tag: Optional[str]) -> str:
    tag = (tag or "").strip().lower()
    return _LANGUAGE_ALIASES.get(tag, tag)


def extension_from_language(language: Optional[str]) -> str:
    return _LANGUAGE_EXTENSIONS.get(normalize_language(language), "txt")


def looks_like_path(candidate: str) -> bool:
    """True for ``name.ext`` style strings, optionally with directories."""
    if candidate in _DOTFILES:
        return True
    if "//" in candidate:
        return False
    if candidate.startswith("./"):
        candidate = candidate[2:]
    return bool(_PATH.match(candidate or "")) and not candidate.startswith(".")


def infer_filename(content: str, language: Optional[str] = None) -> str:
    """Guess a canonical project path from well-known content signatures.

    First match wins; unmatched content gets ``generated-file.<ext>`` keyed by
    the language tag.
    """
    lower = content.lower()
    default_export = "export default function" in content

    if default_export and "HomePage" in content:
        return "app/page.tsx"
    if default_export and "RootLayout" in content:
        return "app/layout.tsx"
    if default_export and "about" in lower:
        return "app/about/page.tsx"
    if default_export and "contact" in lower:
        return "app/contact/page.tsx"

    if '"scripts"' in content and (
        ('"name"' in content and '"version"' in content) or '"dependencies"' in content
    ):
        return "package.json"
    if "tailwind" in content and "config" in content:
        return "tailwind.config.js"
    if "next.config" in content or "nextConfig" in content:
        return "next.config.js"

    if "@tailwind base" in content or "@tailwind components" in content:
        return "app/globals.css"
    if ".module.css" in lower or "styles.module" in content:
        return "styles/components.module.css"

    match = _DEFAULT_EXPORT_NAME.search(content)
    if match and match.group(1) not in ("HomePage", "RootLayout"):
        return f"components/{match.group(1)}.tsx"

    if "export function" in content or "export const" in content:
        return "lib/utils.ts"
    if "export interface" in content or "export type" in content:
        return "types/index.ts"
    if "NextRequest" in content or "NextResponse" in content:
        return "app/api/route.ts"
    if "NEXT_PUBLIC_" in content or "DATABASE_URL" in content:
        return ".env.local"
    if "# " in content and "## " in content and "install" in lower:
        return "README.md"

    return f"generated-file.{extension_from_language(language)}"
