from app.hrms import create_app

app = create_app()
