from unittest.mock import patch

from common.exceptions import DatabaseError


def lend(client, book_id, email, auth):
    return client.post(f"/borrow/lend/{book_id}", json={"email": email}, auth=auth)


def give_back(client, book_id, email, auth):
    return client.post(f"/borrow/return/{book_id}", json={"email": email}, auth=auth)


def test_create_user(client, db_session):
    response = client.post(
        "/users/",
        json={
            "username": "newuser",
            "email": "NewUser@example.com",
            "password": "newpassword",
        },
    )
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "newuser@example.com"
    assert data["role"] == "member"
    assert data["account_verified"] is False
    assert "id" in data


def test_create_user_with_taken_email(client, test_member):
    response = client.post(
        "/users/",
        json={"username": "again", "email": test_member.email, "password": "whatever"},
    )
    assert response.status_code == 400


def test_current_user_requires_valid_credentials(client, member_auth):
    assert client.get("/users/me", auth=member_auth).json()["username"] == "reader"
    response = client.get("/users/me", auth=(member_auth[0], "wrongpassword"))
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Basic"


def test_operator_verifies_new_member(client, operator_auth, make_member):
    member = make_member("pending", verified=False)
    response = client.post(f"/users/{member.id}/verify", auth=operator_auth)
    assert response.status_code == 200
    assert response.json()["account_verified"] is True


def test_add_and_fetch_book(client, operator_auth):
    response = client.post(
        "/books/",
        json={
            "title": "Dune",
            "author": "Frank Herbert",
            "description": "Desert planet",
            "price": 9.99,
            "quantity": 3,
        },
        auth=operator_auth,
    )
    assert response.status_code == 201
    book = response.json()
    assert book["is_available"] is True

    response = client.get(f"/books/{book['id']}")
    assert response.status_code == 200
    assert response.json()["title"] == "Dune"


def test_add_book_rejects_negative_quantity(client, operator_auth):
    response = client.post(
        "/books/",
        json={"title": "Dune", "author": "Frank Herbert", "price": 9.99, "quantity": -1},
        auth=operator_auth,
    )
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_members_cannot_add_books(client, member_auth):
    response = client.post(
        "/books/",
        json={"title": "Dune", "author": "Frank Herbert", "price": 9.99, "quantity": 1},
        auth=member_auth,
    )
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


def test_get_books(client, member_auth, test_book):
    response = client.get("/books/", auth=member_auth)
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["title"] == test_book.title


def test_get_missing_book(client, db_session):
    response = client.get("/books/999")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_lend_book(client, operator_auth, test_member, test_book):
    response = lend(client, test_book.id, test_member.email, operator_auth)
    assert response.status_code == 201
    data = response.json()
    assert data["message"] == "Book borrowed successfully"
    assert data["loan"]["book_id"] == test_book.id
    assert data["loan"]["returned"] is False
    assert data["borrower"]["email"] == test_member.email
    assert data["borrower"]["loans"][0]["book"]["title"] == "Test Book"

    assert client.get(f"/books/{test_book.id}").json()["quantity"] == 1


def test_lend_requires_operator(client, member_auth, test_book):
    response = lend(client, test_book.id, "reader@example.com", member_auth)
    assert response.status_code == 403


def test_lend_to_operator_is_forbidden(client, operator_auth, test_book):
    response = lend(client, test_book.id, operator_auth[0], operator_auth)
    assert response.status_code == 403
    assert "cannot borrow" in response.json()["detail"]


def test_lend_twice_is_a_duplicate(client, operator_auth, test_member, test_book):
    lend(client, test_book.id, test_member.email, operator_auth)
    response = lend(client, test_book.id, test_member.email, operator_auth)
    assert response.status_code == 400
    assert response.json()["code"] == "duplicate_loan"


def test_lend_out_of_stock(client, operator_auth, test_member, make_book):
    book = make_book(quantity=0)
    response = lend(client, book.id, test_member.email, operator_auth)
    assert response.status_code == 400
    assert response.json()["code"] == "out_of_stock"


def test_lend_unknown_borrower(client, operator_auth, test_book):
    response = lend(client, test_book.id, "ghost@example.com", operator_auth)
    assert response.status_code == 404


def test_return_book(client, operator_auth, test_member, test_book):
    lend(client, test_book.id, test_member.email, operator_auth)
    response = give_back(client, test_book.id, test_member.email, operator_auth)
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Book returned successfully"
    assert data["fine"] == 0
    assert data["loan"]["returned"] is True
    assert data["loan"]["returned_date"] is not None
    assert data["borrower"]["loans"][0]["returned"] is True

    assert client.get(f"/books/{test_book.id}").json()["quantity"] == 2


def test_return_twice(client, operator_auth, test_member, test_book):
    lend(client, test_book.id, test_member.email, operator_auth)
    give_back(client, test_book.id, test_member.email, operator_auth)
    response = give_back(client, test_book.id, test_member.email, operator_auth)
    assert response.status_code == 400
    assert response.json()["code"] == "no_active_loan"
    assert client.get(f"/books/{test_book.id}").json()["quantity"] == 2


def test_store_failure_is_reported_as_unavailable(client, operator_auth, test_member, test_book):
    lend(client, test_book.id, test_member.email, operator_auth)
    with patch(
        "lending.crud.release_copy",
        side_effect=DatabaseError("release", "database is locked"),
    ):
        response = give_back(client, test_book.id, test_member.email, operator_auth)

    assert response.status_code == 503
    assert response.json()["code"] == "store_unavailable"
    assert client.get(f"/books/{test_book.id}").json()["quantity"] == 1
    loans = client.get("/borrow/admin/borrowed-books", auth=operator_auth).json()
    assert loans["borrowed_books"][0]["returned"] is False


def test_admin_borrowed_books(client, operator_auth, test_member, make_book):
    first, second = make_book(title="First"), make_book(title="Second")
    lend(client, first.id, test_member.email, operator_auth)
    lend(client, second.id, test_member.email, operator_auth)
    give_back(client, first.id, test_member.email, operator_auth)

    everything = client.get("/borrow/admin/borrowed-books", auth=operator_auth).json()
    assert len(everything["borrowed_books"]) == 2
    assert everything["borrowed_books"][0]["user"]["email"] == test_member.email

    active = client.get(
        "/borrow/admin/borrowed-books", params={"active_only": True}, auth=operator_auth
    ).json()
    assert [loan["book"]["title"] for loan in active["borrowed_books"]] == ["Second"]


def test_admin_borrowed_books_requires_operator(client, member_auth):
    response = client.get("/borrow/admin/borrowed-books", auth=member_auth)
    assert response.status_code == 403


def test_my_borrowed_books(client, operator_auth, member_auth, test_book):
    lend(client, test_book.id, member_auth[0], operator_auth)

    response = client.get("/borrow/my-borrowed-books", auth=member_auth)
    assert response.status_code == 200
    loans = response.json()["borrowed_books"]
    assert len(loans) == 1
    assert loans[0]["book"] == {
        "id": test_book.id,
        "title": "Test Book",
        "author": "Test Author",
        "price": 12.5,
    }


def test_my_borrowed_books_requires_login(client, db_session):
    assert client.get("/borrow/my-borrowed-books").status_code == 401
