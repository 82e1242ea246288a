"""Deployment workflows and the shell/docker adapters they use."""
