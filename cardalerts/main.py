from cardalerts.core.database import Base, engine
from fastapi import FastAPI
from cardalerts.models import email_message, transaction  # noqa: F401  (register tables)
from cardalerts.routes.emails import email_router
from cardalerts.routes.exports import export_router


app = FastAPI(title="Card Alerts API", version="1.0.0")

Base.metadata.create_all(bind=engine)

# Include all routers
app.include_router(email_router)
app.include_router(export_router)


@app.get("/")
def root():
    return {"message": "Card Alerts API is running"}
