from restlite.cli import app

app(prog_name="restlite")
