from ticket_engine.config.settings import Settings, build_blob_store  # noqa: F401
