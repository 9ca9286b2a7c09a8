"""Source adapters: one per external system, all behind the Source protocol."""

from taskhub.sources.base import Action, Comment, FetchOptions, FetchResult, ItemDetail, Source

__all__ = ["Action", "Comment", "FetchOptions", "FetchResult", "ItemDetail", "Source"]
