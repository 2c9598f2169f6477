"""Application services for the tapship CLI.

Services implement the release logic, coordinating between the domain
layer (core/) and infrastructure (git/, tools/, platform/).
"""
