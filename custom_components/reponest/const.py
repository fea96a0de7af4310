"""Constants for the RepoNest integration.

Defines the integration domain, the public integration version and the fixed
values shared by the library model, storage and transport layers.
"""

from typing import Final

# Integration domain used across all modules
DOMAIN: str = "reponest"

# Public integration version (kept in sync with manifest.json)
INTEGRATION_VERSION: str = "0.1.0"

# Id of the distinguished root folder
ROOT_FOLDER_ID: Final[str] = "root"

# Display name given to the root of an empty library
ROOT_FOLDER_NAME: Final[str] = "Root"

# Repository URLs must start with one of these prefixes
ALLOWED_URL_PREFIXES: Final[tuple[str, ...]] = (
    "https://github.com/",
    "https://gitlab.com/",
)

# Selection key prefixes used by bulk operations
SELECTION_FOLDER_PREFIX: Final[str] = "folder"
SELECTION_REPO_PREFIX: Final[str] = "repo"

# Bundled starter library used for first-run bootstrap and reset
SEED_FILENAME: Final[str] = "seed.json"

# Document version stamped on a library created from the seed
SEED_LIBRARY_VERSION: Final[int] = 1
