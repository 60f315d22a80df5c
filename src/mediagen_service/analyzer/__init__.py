"""Natural-language prompt analysis."""

from .pipeline import AnalyzedRequest, analyze_prompt
from .url_tags import TaggedReference, TaggedText, resolve_placeholders, tag_references

__all__ = [
	"AnalyzedRequest",
	"TaggedReference",
	"TaggedText",
	"analyze_prompt",
	"resolve_placeholders",
	"tag_references",
]
