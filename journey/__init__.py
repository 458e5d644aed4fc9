"""Journey builder graph core and service."""
