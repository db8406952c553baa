from app.fiscalwire import create_app

app = create_app()
