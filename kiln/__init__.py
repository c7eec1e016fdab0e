"""Kiln static site build pipeline.

This package compiles SCSS stylesheets, renders server-side template files through an
external interpreter, copies static assets and serves the result with live reload.

The main entry point is the CLI module, which provides commands for building the site,
watching it during development and cleaning the build output.

Architecture:
- Each stage (rendering, styles, assets) lives in its own module.
- Stages are sequenced by a TaskGraph of named tasks.
- External collaborators (interpreter process, reload transport) sit behind protocols.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
