# ALERIS.ops API Services Package
# No imports here: src.utils depends on src.services.base.
