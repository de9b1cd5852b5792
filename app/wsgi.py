from app.corhub import create_app

app = create_app()
