"""tapship: cut a release and publish it to a Homebrew tap."""

__version__ = "0.1.0"
