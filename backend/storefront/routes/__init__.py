# Built-in routes; business routers are passed to create_app()
