from evm_wallet.cli.app import app

app()
