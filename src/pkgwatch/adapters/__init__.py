"""Package registry adapters."""

from pkgwatch.adapters.base import BaseAdapter, normalize_repository_url
from pkgwatch.adapters.npm import NpmAdapter

__all__ = ["BaseAdapter", "NpmAdapter", "normalize_repository_url"]
