"""Core sync logic for blobsync."""
