from __future__ import annotations

# Build and test commands of the released project
BUILD_TIMEOUT_SECONDS = 60 * 60.0

# brew install --build-from-source compiles the project
BREW_INSTALL_TIMEOUT_SECONDS = 60 * 60.0
BREW_TIMEOUT_SECONDS = 5 * 60.0
# brew update pulls every tap, including the one just pushed to
BREW_UPDATE_TIMEOUT_SECONDS = 10 * 60.0

# Installed binary: --version and smoke command
SMOKE_TIMEOUT_SECONDS = 60.0

# Archive download retry policy (transient failures only)
DOWNLOAD_RETRY_BACKOFF_FACTOR = 2.0
