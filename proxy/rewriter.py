"""
Text-level rewriting of rendered HTML.

The document is never parsed into a DOM. A root-relative reference is any
token starting with "/" right after a double quote, single quote or space,
running up to the next quote or ">". This also matches plain text such as
"and / or" inside a paragraph; that false positive is accepted.
"""

import re
from typing import List, Tuple

from proxy.models import AssetReference

# Leading whitespace is consumed so no double space is left behind
SRCSET_RE = re.compile(r"""\s+srcset\s*=\s*(?:"[^"]*"?|'[^']*'?|[^\s>]*)""", re.IGNORECASE)

# Group 1 is the delimiter, group 2 the root-relative reference
ROOT_RELATIVE_RE = re.compile(r"""(["' ])(/[^"'>]+)""")

INSTRUMENTATION_SCRIPT = """<script>
  window.console.log = function() {};
  window.console.warn = function() {};
  window.console.error = function() {};
  window.onerror = function() { return true; };
  window.addEventListener('error', function(e) { e.stopImmediatePropagation(); e.preventDefault(); return false; }, true);
  window.addEventListener('unhandledrejection', function(e) { e.preventDefault(); }, true);
</script>"""


def strip_srcset(html: str) -> str:
    """Remove every srcset attribute, whatever its value looks like."""
    return SRCSET_RE.sub("", html)


def rewrite_urls(html: str, base: str) -> str:
    """
    Prefix every root-relative reference with base, keeping its delimiter.
    Not idempotent: a second pass with the same base prefixes again.
    """
    return ROOT_RELATIVE_RE.sub(lambda m: f"{m.group(1)}{base}{m.group(2)}", html)


def discover_assets(html: str) -> List[AssetReference]:
    """
    Root-relative references in document order, first occurrence wins,
    duplicates dropped by literal string.
    """
    seen = dict.fromkeys(m.group(2) for m in ROOT_RELATIVE_RE.finditer(html))
    return [AssetReference(raw) for raw in seen]


def rewrite_absolute(html: str, origin: str) -> Tuple[str, List[AssetReference]]:
    """
    Absolute pass: drop srcset, then point root-relative references at the
    target origin. Returns the rewritten document and the references that
    pass matched, which are the assets to mirror.
    """
    html = strip_srcset(html)
    assets = discover_assets(html)
    return rewrite_urls(html, origin), assets


def inject_instrumentation(html: str) -> str:
    """Append the script that silences console output and page errors."""
    return html + INSTRUMENTATION_SCRIPT
