"""Sphinx configuration for the Notifications Configuration API documentation."""

import os
import sys
from datetime import datetime

sys.path.insert(0, os.path.abspath(".."))

project = "Notifications Configuration API"
current_year = datetime.now().year
copyright = f"{current_year}, Notifications"
author = "Notifications Team"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
]


templates_path = ["_templates"]
exclude_patterns: list[str] = ["_build"]

html_theme = "alabaster"

html_static_path = []
