"""Blob storage paths, references and file operations."""
