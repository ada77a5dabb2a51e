import os
import sys
import tomllib
from pathlib import Path

sys.path.insert(0, os.path.abspath("../../src"))

# Load project metadata from pyproject.toml
pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
with open(pyproject_path, "rb") as f:
    pyproject_data = tomllib.load(f)

project_info = pyproject_data["project"]
project = project_info["name"]
author = project_info["authors"][0]["name"]
copyright = "2026"
release = project_info["version"]

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
    "sphinx.ext.mathjax",
    "sphinx.ext.intersphinx",
    "sphinx_rtd_theme",
]

templates_path = []
exclude_patterns = []

html_theme = "sphinx_rtd_theme"

napoleon_google_docstring = False
napoleon_numpy_docstring = True
napoleon_include_init_with_doc = True
napoleon_include_private_with_doc = False
napoleon_use_admonition_for_notes = True
napoleon_use_ivar = False
napoleon_use_param = True
napoleon_use_rtype = True
napoleon_preprocess_types = True
napoleon_attr_annotations = True
napoleon_custom_sections = ["Description", "Attributes", "Flow"]

autodoc_typehints = "description"
autodoc_typehints_format = "short"
python_use_unqualified_type_names = True

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "jax": ("https://jax.readthedocs.io/en/latest/", None),
}

autodoc_default_options = {
    "exclude-members": "Float, Array, Int, Bool, beartype, jaxtyped, Callable, NamedTuple, Optional, Tuple",
    "ignore-module-all": True,
}

nitpicky = False

nitpick_ignore = [
    ("py:class", "Float"),
    ("py:class", "Array"),
    ("py:class", "Int"),
    ("py:class", "Bool"),
    ("py:class", "PRNGKeyArray"),
    ("py:class", "jaxtyping.Float"),
    ("py:class", "jaxtyping.Array"),
    ("py:class", "jaxtyping.Int"),
    ("py:class", "jaxtyping.Bool"),
    ("py:class", "beartype.typing.NamedTuple"),
]
