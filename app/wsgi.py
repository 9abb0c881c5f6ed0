from app.cvms import create_app

app = create_app()
