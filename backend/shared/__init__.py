"""Code shared by the bot services: models, repositories, pool and cache."""
