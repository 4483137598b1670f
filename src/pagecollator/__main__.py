from pagecollator._cli import app

app(prog_name="pagecollator")
