from workspace_ops.cli.main import console_main

console_main()
