from scrollwork.cli.main import app

app(prog_name="scrollwork")
