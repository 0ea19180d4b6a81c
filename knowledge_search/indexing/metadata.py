"""Inference of document metadata used for routing and trust scoring"""

from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlparse

from ..embeddings.router import CODE_LANGUAGES

SOURCE_QUALITIES = ("official", "verified", "community")

VERIFIED_HOSTS = {"github.com", "gitlab.com", "bitbucket.org", "pub.dev", "pypi.org", "npmjs.com"}

EXTENSION_LANGUAGES = {
    ".dart": "dart",
    ".ts": "ts",
    ".tsx": "ts",
    ".js": "js",
    ".jsx": "js",
    ".mjs": "js",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".py": "python",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".go": "go",
    ".rs": "rust",
    ".swift": "swift",
}

CODE_CONTENT_TYPES = {
    "text/x-python",
    "text/x-c",
    "text/x-java",
    "text/javascript",
    "application/javascript",
    "application/typescript",
}


def infer_source_quality(
    source_url: Optional[str], official_domains: Iterable[str] = ()
) -> Optional[str]:
    """
    Classify a source URL.

    Official documentation domains are "official", code hosts are
    "verified", any other URL is "community". No URL yields None.
    """
    if not source_url:
        return None
    host = (urlparse(source_url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if not host:
        return None

    for domain in official_domains:
        domain = domain.lower()
        if host == domain or host.endswith("." + domain):
            return "official"
    if host in VERIFIED_HOSTS or any(host.endswith("." + h) for h in VERIFIED_HOSTS):
        return "verified"
    return "community"


def infer_language_from_path(file_path: Optional[str]) -> Optional[str]:
    if not file_path:
        return None
    return EXTENSION_LANGUAGES.get(PurePosixPath(file_path.replace("\\", "/")).suffix.lower())


def infer_doc_type(content_type: Optional[str], language: Optional[str]) -> Optional[str]:
    if language and language.lower() in CODE_LANGUAGES:
        return "code"
    if content_type and content_type.lower() in CODE_CONTENT_TYPES:
        return "code"
    return None


def build_document_metadata(
    metadata: Optional[Dict[str, Any]],
    content_type: Optional[str] = None,
    official_domains: Iterable[str] = (),
) -> Dict[str, Any]:
    """
    Fill in missing language, doc_type and source_quality.

    Values already present in ``metadata`` always win.
    """
    result = dict(metadata or {})

    if not result.get("language"):
        language = infer_language_from_path(result.get("file_path"))
        if language:
            result["language"] = language

    if not result.get("doc_type"):
        doc_type = infer_doc_type(content_type, result.get("language"))
        if doc_type:
            result["doc_type"] = doc_type

    if not result.get("source_quality"):
        quality = infer_source_quality(result.get("source_url"), official_domains)
        if quality:
            result["source_quality"] = quality

    return result
