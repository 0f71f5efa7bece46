"""External boundaries: WeCom client, payload parsing and HTTP routers."""
