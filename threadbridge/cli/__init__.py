"""CLI module for threadbridge."""
