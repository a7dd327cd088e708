"""ReviewIndex review and comparison site.

This package serves product reviews and comparisons whose markdown sources
live in a GitHub repository. Each request fetches the document through the
GitHub Contents API, parses its frontmatter header, renders the markdown to
sanitized HTML and assembles a full page, with read-through caching of both
the raw documents and the finished pages.

The main entry point is the CLI module, which provides commands for serving
the site, rendering single pages and scaffolding new drafts.
"""

__all__ = ["__version__"]
__version__ = "0.2.0"
