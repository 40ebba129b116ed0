"""
Management command to seed the database with sample data.

Usage: python manage.py seed_board [--users 10] [--posts 30] [--comments 100] [--clear]

Posts, comments and votes all go through services.py so vote counters
match the ledger.
"""

import random
from datetime import timedelta
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from django.utils import timezone

from board.exceptions import BoardError
from board.models import Post, Comment, Vote, PostType
from board.services import submit_post, create_comment, cast_vote


class Command(BaseCommand):
    help = 'Seed the database with sample posts, comments and votes'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of users to create'
        )
        parser.add_argument(
            '--posts',
            type=int,
            default=30,
            help='Number of posts to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=100,
            help='Number of comments to create'
        )
        parser.add_argument(
            '--seed',
            type=int,
            default=None,
            help='Random seed for reproducible data'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        rng = random.Random(options['seed'])

        if options['clear']:
            self.stdout.write('Clearing existing data...')
            Vote.objects.all().delete()
            Comment.objects.all().delete()
            Post.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])

        posts, comments, vote_count = [], [], 0
        if users:
            self.stdout.write('Creating posts...')
            posts = self._create_posts(rng, users, options['posts'])

        # Comments and votes need somewhere to go and someone to write them
        if posts:
            self.stdout.write('Creating comments...')
            comments = self._create_comments(rng, users, posts, options['comments'])

            self.stdout.write('Casting votes...')
            vote_count = self._cast_votes(rng, users, posts, comments)
        else:
            self.stdout.write('No posts created; skipping comments and votes.')

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(users)} users\n'
            f'  - {len(posts)} posts\n'
            f'  - {len(comments)} comments\n'
            f'  - {vote_count} votes'
        ))

    def _create_users(self, count):
        users = []
        for i in range(count):
            username = f'user{i+1}'
            user = User.objects.filter(username=username).first()
            if user is None:
                user = User.objects.create_user(
                    username=username,
                    email=f'{username}@example.com',
                    password='password123'
                )
            users.append(user)
        return users

    def _create_posts(self, rng, users, count):
        posts = []
        stories = [
            ("A new approach to incremental parsing", "https://example.com/parsing"),
            ("Why we moved our queue to PostgreSQL", "https://example.com/queues"),
            ("The hidden cost of microservices", "https://example.org/microservices"),
            ("Building a tiny search engine", "https://example.net/search"),
        ]
        asks = [
            ("Ask: What are you working on this month?", "Share your side projects."),
            ("Ask: How do you review large pull requests?", "Looking for practical tips."),
        ]
        shows = [
            ("Show: A terminal UI for tailing logs", "https://example.com/logtail"),
            ("Show: Weekend project, a static site generator", "https://example.org/ssg"),
        ]
        jobs = [
            ("Acme (YC) is hiring backend engineers", "https://example.com/jobs"),
        ]

        for i in range(count):
            post_type = rng.choice([PostType.STORY] * 5 + [PostType.ASK, PostType.SHOW, PostType.JOB])
            if post_type == PostType.ASK:
                title, text = rng.choice(asks)
                post = submit_post(rng.choice(users), f"{title} #{i+1}", post_type, text=text)
            else:
                pool = {PostType.STORY: stories, PostType.SHOW: shows, PostType.JOB: jobs}[post_type]
                title, url = rng.choice(pool)
                post = submit_post(rng.choice(users), f"{title} #{i+1}", post_type, url=f"{url}/{i+1}")

            # Spread creation times over the last two days so hot ranking has something to decay
            Post.objects.filter(id=post.id).update(
                created_at=timezone.now() - timedelta(hours=rng.randint(0, 48))
            )
            posts.append(post)
        return posts

    def _create_comments(self, rng, users, posts, count):
        comments = []
        comment_texts = [
            "Great point! I totally agree.",
            "Hmm, I'm not sure about this...",
            "Thanks for sharing!",
            "Can you elaborate on this?",
            "I have a different perspective on this.",
            "Interesting take, but have you considered...",
        ]

        for _ in range(count):
            post = rng.choice(posts)

            # 30% chance of being a reply to an existing comment on the same post
            parent = None
            existing_comments = [c for c in comments if c.post_id == post.id]
            if existing_comments and rng.random() < 0.3:
                parent = rng.choice(existing_comments)

            comment = create_comment(
                post.id,
                rng.choice(users),
                rng.choice(comment_texts),
                parent_id=parent.id if parent else None,
            )
            comments.append(comment)

        return comments

    def _cast_votes(self, rng, users, posts, comments):
        votes = 0
        for post in posts:
            voters = rng.sample(users, k=rng.randint(0, len(users)))
            for voter in voters:
                vote_type = 1 if rng.random() < 0.8 else -1
                try:
                    cast_vote(voter, 'post', post.id, vote_type)
                    votes += 1
                except BoardError as exc:
                    # e.g. downvotes disabled by BOARD['VOTE_RULESETS']
                    self.stderr.write(f'Skipped vote on post {post.id}: {exc}')

        for comment in comments:
            if rng.random() < 0.3:
                for voter in rng.sample(users, k=min(3, len(users))):
                    cast_vote(voter, 'comment', comment.id, 1)
                    votes += 1
        return votes
