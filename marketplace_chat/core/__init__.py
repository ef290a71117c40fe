"""Session plumbing: config, errors, HTTP client, push channel, timers, cache"""
