"""Background work on coding results: applying them and exporting them."""
