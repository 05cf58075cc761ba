"""workspace-ops 命令行入口。"""
