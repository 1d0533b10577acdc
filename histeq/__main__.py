from histeq.cli.equalize import cli_entry

cli_entry()
