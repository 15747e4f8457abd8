from bookmark_analytics.models.counter_record import CounterRecordRow  # noqa: F401
