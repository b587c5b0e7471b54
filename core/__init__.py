"""Configuration, logging, errors and text helpers shared by every package."""
