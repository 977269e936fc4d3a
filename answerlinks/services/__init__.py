"""Service layer for the Answer Link Portal."""
from .expiry import ExpiryUnit, to_minutes
from .registry import LinkRegistryClient
from .query_cache import QueryCache
from .issuer import IssuerSelection, LinkIssuer
from .validity import TraineeLinkMeta, ValidityInterpreter, ViewMode, build_answers_url, build_portal_url
from .portal import AnswerDraft, AnswerPortal, PortalState
from .messaging import ChannelOpener, ScriptOpener, WindowChannel
from .notifier import CompletionNotifier
from .reconciler import CacheReconciler, ReconcilerRegistry

__all__ = [
	"ExpiryUnit", "to_minutes", "LinkRegistryClient", "QueryCache",
	"IssuerSelection", "LinkIssuer",
	"TraineeLinkMeta", "ValidityInterpreter", "ViewMode", "build_answers_url", "build_portal_url",
	"AnswerDraft", "AnswerPortal", "PortalState",
	"ChannelOpener", "ScriptOpener", "WindowChannel",
	"CompletionNotifier", "CacheReconciler", "ReconcilerRegistry",
]
